# /app/utils/email_util.py
import ssl
import smtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from flask import current_app

def send_email(recipient_email: str, subject: str, text: str, html: str) -> bool:
    """
    Sends a multipart (plain + HTML) email using the MAIL_* settings.

    Returns False instead of raising when mail is not configured or the SMTP
    exchange fails; a lost notification never rolls back the action that
    triggered it.
    """
    config = current_app.config
    mail_server = config.get('MAIL_SERVER')
    mail_port = config.get('MAIL_PORT', 587)
    mail_username = config.get('MAIL_USERNAME')
    mail_password = config.get('MAIL_PASSWORD')

    if not all([mail_server, mail_port, mail_username, mail_password]):
        current_app.logger.error(f"Email server is not configured. Cannot send '{subject}'.")
        return False

    message = MIMEMultipart("alternative")
    message["Subject"] = subject
    message["From"] = mail_username
    message["To"] = recipient_email
    message.attach(MIMEText(text, "plain"))
    message.attach(MIMEText(html, "html"))

    try:
        with smtplib.SMTP(mail_server, mail_port) as server:
            if config.get('MAIL_USE_TLS', True):
                server.starttls(context=ssl.create_default_context())
            server.login(mail_username, mail_password)
            server.sendmail(mail_username, recipient_email, message.as_string())
        current_app.logger.info(f"Sent '{subject}' email to {recipient_email}")
        return True
    except (smtplib.SMTPException, OSError) as e:
        current_app.logger.error(f"Failed to send email to {recipient_email}: {e}")
        return False

def send_therapist_credentials_email(recipient_email: str, full_name: str, username: str, password: str):
    """Welcome email for a therapist account created by an admin."""
    dashboard_url = current_app.config.get('DASHBOARD_URL')
    text = f"""
    Hello {full_name},

    A therapist account has been created for you.
    Your username is: {username}
    Your temporary password is: {password}

    Please log in at {dashboard_url} and change your password immediately.
    """
    html = f"""
    <html>
      <body>
        <h2>Welcome aboard</h2>
        <p>Hello {full_name},</p>
        <p>A therapist account has been created for you. Please use the following credentials to log in:</p>
        <ul>
          <li><strong>Username:</strong> {username}</li>
          <li><strong>Temporary Password:</strong> <code>{password}</code></li>
        </ul>
        <p>For security, please change this password after your first login at <a href="{dashboard_url}">your dashboard</a>.</p>
      </body>
    </html>
    """
    return send_email(recipient_email, "Your Therapist Account Credentials", text, html)

def send_assignment_email(recipient_email: str, therapist_name: str, patient_name: str, appointment_date):
    when = appointment_date.strftime('%Y-%m-%d %H:%M UTC') if appointment_date else 'to be scheduled'
    dashboard_url = current_app.config.get('DASHBOARD_URL')
    text = f"""
    Hello {therapist_name},

    You have been assigned a new patient: {patient_name}.
    First session: {when}

    Please review and accept the appointment in your dashboard: {dashboard_url}
    """
    html = f"""
    <html>
      <body>
        <p>Hello {therapist_name},</p>
        <p>You have been assigned a new patient: <strong>{patient_name}</strong>.</p>
        <p>First session: {when}</p>
        <p>Please review and accept the appointment in <a href="{dashboard_url}">your dashboard</a>.</p>
      </body>
    </html>
    """
    return send_email(recipient_email, "New Patient Assignment", text, html)

def send_payout_rejected_email(recipient_email: str, therapist_name: str, appointment_id: int, note: str):
    text = f"""
    Hello {therapist_name},

    The payout for appointment #{appointment_id} was rejected.
    Reason: {note}
    """
    html = f"""
    <html>
      <body>
        <p>Hello {therapist_name},</p>
        <p>The payout for appointment <strong>#{appointment_id}</strong> was rejected.</p>
        <p><strong>Reason:</strong> {note}</p>
      </body>
    </html>
    """
    return send_email(recipient_email, "Payout Rejected", text, html)
