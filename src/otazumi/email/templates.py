"""
Email templates for Otazumi.

Inline CSS only, for email client compatibility. Each template function
returns (subject, html_body, text_body).
"""

from __future__ import annotations

from html import escape

APP_NAME = "Otazumi"

# Colors
BG_PAGE = "#0F0F13"
BG_CARD = "#1A1A22"
ACCENT = "#FFBADE"
TEXT_PRIMARY = "#F4F4F8"
TEXT_SECONDARY = "#A0A0B2"
BORDER = "#2A2A36"


def _base_layout(content: str) -> str:
    """Wrap content in the shared email shell."""
    return f"""\
<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{APP_NAME}</title>
</head>
<body style="margin: 0; padding: 0; background-color: {BG_PAGE}; font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;">
    <table role="presentation" cellspacing="0" cellpadding="0" border="0" width="100%" style="background-color: {BG_PAGE};">
        <tr>
            <td align="center" style="padding: 40px 20px;">
                <table role="presentation" cellspacing="0" cellpadding="0" border="0" width="600" style="max-width: 600px; width: 100%;">
                    <tr>
                        <td align="center" style="padding-bottom: 28px;">
                            <span style="font-size: 24px; font-weight: 700; color: {ACCENT};">{APP_NAME}</span>
                        </td>
                    </tr>
                    <tr>
                        <td style="background-color: {BG_CARD}; border: 1px solid {BORDER}; border-radius: 12px; padding: 36px 32px;">
                            {content}
                        </td>
                    </tr>
                    <tr>
                        <td align="center" style="padding-top: 28px;">
                            <p style="color: {TEXT_SECONDARY}; font-size: 12px; line-height: 1.5; margin: 0;">
                                This email was sent by {APP_NAME}.<br>
                                If you didn't expect this email, you can safely ignore it.
                            </p>
                        </td>
                    </tr>
                </table>
            </td>
        </tr>
    </table>
</body>
</html>"""


def _button(url: str, label: str) -> str:
    """Render a call-to-action button."""
    return f"""\
<table role="presentation" cellspacing="0" cellpadding="0" border="0" style="margin: 28px auto;">
    <tr>
        <td align="center" style="background-color: {ACCENT}; border-radius: 8px;">
            <a href="{url}" target="_blank" style="display: inline-block; padding: 14px 32px; color: #111111; font-size: 16px; font-weight: 600; text-decoration: none; border-radius: 8px;">
                {label}
            </a>
        </td>
    </tr>
</table>"""


def _link_fallback(url: str) -> str:
    return f"""\
<hr style="border: none; border-top: 1px solid {BORDER}; margin: 24px 0;">
<p style="color: {TEXT_SECONDARY}; font-size: 12px; line-height: 1.5; margin: 0;">
    If the button doesn't work, copy and paste this URL:<br>
    <a href="{url}" style="color: {ACCENT}; word-break: break-all;">{url}</a>
</p>"""


def verification_email(username: str, verify_url: str, expires_hours: int = 24) -> tuple[str, str, str]:
    """
    Email verification link, sent on registration and on resend.

    Returns:
        (subject, html_body, text_body)
    """
    name = escape(username)
    subject = f"Verify your email - {APP_NAME}"
    content = f"""\
<h1 style="color: {TEXT_PRIMARY}; font-size: 24px; font-weight: 700; margin: 0 0 16px 0;">Welcome to {APP_NAME}, {name}!</h1>
<p style="color: {TEXT_SECONDARY}; font-size: 16px; line-height: 1.6; margin: 0 0 24px 0;">
    Please verify your email address to finish setting up your account.
</p>
{_button(verify_url, "Verify Email")}
<p style="color: {TEXT_SECONDARY}; font-size: 13px; line-height: 1.5; margin: 24px 0 0 0;">
    This link expires in <strong style="color: {TEXT_PRIMARY};">{expires_hours} hours</strong>.
</p>
{_link_fallback(verify_url)}"""
    text_body = (
        f"Hi {username},\n\n"
        f"Welcome to {APP_NAME}! Please verify your email by visiting this link:\n\n"
        f"{verify_url}\n\n"
        f"This link expires in {expires_hours} hours.\n\n"
        f"-- The {APP_NAME} Team"
    )
    return subject, _base_layout(content), text_body


def password_reset_email(username: str, reset_url: str, expires_minutes: int = 60) -> tuple[str, str, str]:
    """
    Password reset link.

    Returns:
        (subject, html_body, text_body)
    """
    name = escape(username)
    subject = f"Reset your password - {APP_NAME}"
    expires_text = "1 hour" if expires_minutes == 60 else f"{expires_minutes} minutes"
    content = f"""\
<h1 style="color: {TEXT_PRIMARY}; font-size: 24px; font-weight: 700; margin: 0 0 16px 0;">Password reset request</h1>
<p style="color: {TEXT_SECONDARY}; font-size: 16px; line-height: 1.6; margin: 0 0 8px 0;">Hi {name},</p>
<p style="color: {TEXT_SECONDARY}; font-size: 16px; line-height: 1.6; margin: 0 0 24px 0;">
    Click the button below to choose a new password.
</p>
{_button(reset_url, "Reset Password")}
<p style="color: {TEXT_SECONDARY}; font-size: 13px; line-height: 1.5; margin: 24px 0 0 0;">
    This link expires in <strong style="color: {TEXT_PRIMARY};">{expires_text}</strong>.
    If you didn't request this, your password will remain unchanged.
</p>
{_link_fallback(reset_url)}"""
    text_body = (
        f"Hi {username},\n\n"
        f"Click this link to reset your password:\n\n{reset_url}\n\n"
        f"This link expires in {expires_text}.\n\n"
        f"If you didn't request this, please ignore this email.\n\n"
        f"-- The {APP_NAME} Team"
    )
    return subject, _base_layout(content), text_body


def welcome_email(username: str) -> tuple[str, str, str]:
    """Sent once the email address is verified."""
    name = escape(username)
    subject = f"Welcome to {APP_NAME}!"
    content = f"""\
<h1 style="color: {TEXT_PRIMARY}; font-size: 24px; font-weight: 700; margin: 0 0 16px 0;">You're all set, {name}!</h1>
<p style="color: {TEXT_SECONDARY}; font-size: 16px; line-height: 1.6; margin: 0;">
    Your email is verified. Your favorites, watchlist and history now follow you across devices.
</p>"""
    text_body = (
        f"Hi {username},\n\n"
        f"Your email is verified. Your favorites, watchlist and history now follow you across devices.\n\n"
        f"-- The {APP_NAME} Team"
    )
    return subject, _base_layout(content), text_body


def account_deleted_email(username: str) -> tuple[str, str, str]:
    """Confirmation after account deletion."""
    name = escape(username)
    subject = f"Account Deleted - {APP_NAME}"
    content = f"""\
<h1 style="color: {TEXT_PRIMARY}; font-size: 24px; font-weight: 700; margin: 0 0 16px 0;">Account deleted</h1>
<p style="color: {TEXT_SECONDARY}; font-size: 16px; line-height: 1.6; margin: 0 0 8px 0;">Hi {name},</p>
<p style="color: {TEXT_SECONDARY}; font-size: 16px; line-height: 1.6; margin: 0;">
    Your account and all synced data have been permanently deleted. We're sorry to see you go.
</p>"""
    text_body = (
        f"Hi {username},\n\n"
        f"Your account and all synced data have been permanently deleted.\n\n"
        f"-- The {APP_NAME} Team"
    )
    return subject, _base_layout(content), text_body
