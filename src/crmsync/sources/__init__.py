from .models import MailMessage

__all__ = ["MailMessage"]
