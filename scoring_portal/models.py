from datetime import datetime
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


class JobHistory(db.Model):
    __tablename__ = 'job_history'

    id = db.Column(db.Integer, primary_key=True)
    userkey = db.Column(db.String(100), nullable=False, index=True)
    display_name = db.Column(db.String(100), nullable=False)

    # Functional benchmark
    bench_score = db.Column(db.Integer, nullable=False, default=0)
    bench_result_msg = db.Column(db.Text, nullable=False, default='Success')

    # Availability rating (tier value 0-3)
    platform_rate = db.Column(db.Integer, nullable=False, default=0)
    platform_result_msg = db.Column(db.Text, nullable=False, default='Success')

    total_score = db.Column(db.Integer, nullable=False, default=0)
    executed_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'userkey': self.userkey,
            'display_name': self.display_name,
            'bench_score': self.bench_score,
            'bench_result_msg': self.bench_result_msg,
            'platform_rate': self.platform_rate,
            'platform_result_msg': self.platform_result_msg,
            'total_score': self.total_score,
            'executed_at': self.executed_at.isoformat() if self.executed_at else None,
        }


class Ranking(db.Model):
    __tablename__ = 'rankings'

    id = db.Column(db.Integer, primary_key=True)
    display_name = db.Column(db.String(100), unique=True, nullable=False, index=True)
    score = db.Column(db.Integer, nullable=False, default=0)
    executed_at = db.Column(db.DateTime, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        return {
            'display_name': self.display_name,
            'score': self.score,
            'executed_at': self.executed_at.isoformat() if self.executed_at else None,
        }
