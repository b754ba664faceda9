from .headers import (
    clean_preview,
    extract_recipient_addresses,
    extract_sender_address,
    parse_message_date,
    split_recipients,
)

__all__ = [
    "extract_sender_address",
    "extract_recipient_addresses",
    "split_recipients",
    "clean_preview",
    "parse_message_date",
]
