from flask import current_app, render_template
from flask_mail import Message

from brankas.extensions import mail


def send_pin_set_email(email, name, box_code):
    """Fire-and-forget confirmation mail. Returns False if sending failed."""
    if not email:
        return False
    try:
        msg = Message(
            subject='Your Brankas Kita PIN is set',
            recipients=[email],
            body=render_template('email/pin_set.txt', name=name, box_code=box_code),
        )
        mail.send(msg)
        return True
    except Exception as e:
        current_app.logger.warning("PIN was set, but the confirmation email failed: %s", e)
        return False
