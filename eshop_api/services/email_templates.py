"""HTML bodies for the one-time code emails."""

_CODE_TEMPLATE = """
    <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px; border: 1px solid #e0e0e0; border-radius: 5px;">
        <div style="text-align: center; margin-bottom: 20px;">
            <h2 style="color: #333;">{title}</h2>
        </div>
        <div style="background-color: #f8f9fa; padding: 20px; border-radius: 5px; text-align: center; margin-bottom: 20px;">
            <p style="color: #666; margin-bottom: 10px;">{intro}</p>
            <div style="background-color: #fff; padding: 15px; border-radius: 5px; font-size: 24px; font-weight: bold; letter-spacing: 5px; color: {color}; border: 2px dashed {color};">
                {code}
            </div>
        </div>
        <div style="color: #666; font-size: 14px; text-align: center;">
            <p>This code will expire in {minutes} minutes.</p>
            <p>If you didn't request this code, please ignore this email.</p>
        </div>
    </div>
"""


def email_verification_template(code: str, minutes: int = 10) -> str:
    return _CODE_TEMPLATE.format(
        title="Email Verification Code",
        intro="Your email verification code is:",
        color="#28a745",
        code=code,
        minutes=minutes,
    )


def reset_password_template(code: str, minutes: int = 10) -> str:
    return _CODE_TEMPLATE.format(
        title="Password Reset Code",
        intro="Your password reset code is:",
        color="#007bff",
        code=code,
        minutes=minutes,
    )


def delete_account_template(code: str, minutes: int = 10) -> str:
    return _CODE_TEMPLATE.format(
        title="Delete Account Verification Code",
        intro="Use this code to confirm the deletion of your account:",
        color="#dc3545",
        code=code,
        minutes=minutes,
    )
