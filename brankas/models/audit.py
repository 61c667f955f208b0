from brankas.extensions import db
import datetime

# --- Local tables ---
# Business entities live in the hosted backend; these only back the
# audit trail and the idempotency ledger.

class ApiLog(db.Model):
    __tablename__ = 'api_log'
    id = db.Column(db.Integer, primary_key=True)
    timestamp = db.Column(db.DateTime, default=datetime.datetime.utcnow, index=True)
    event_type = db.Column(db.String(100), index=True)
    status = db.Column(db.String(50), index=True)
    details = db.Column(db.Text)
    user_id = db.Column(db.String(64), nullable=True, index=True)
    ip_address = db.Column(db.String(45))

    def __repr__(self):
        return f"ApiLog('{self.event_type}', '{self.status}')"

class SubmissionKey(db.Model):
    __tablename__ = 'submission_key'
    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(64), unique=True, nullable=False)
    scope = db.Column(db.String(50), nullable=False)
    rental_id = db.Column(db.String(64), nullable=False, index=True)
    user_id = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.datetime.utcnow)

    def __repr__(self):
        return f"SubmissionKey('{self.scope}', '{self.key}')"
