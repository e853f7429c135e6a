from typing import Optional
from grove.errors import ValidationError
import re

def normalize_phone(phone: str) -> str:
    # Strip formatting and make sure the number carries a leading '+'.
    # Numbers are expected to include their country code already.
    clean = re.sub(r'[^0-9+]', '', phone)
    if not clean.startswith('+'):
         clean = "+" + clean
    return clean

def validate_phone(phone: str) -> str:
    clean = normalize_phone(phone)
    if not re.fullmatch(r'\+[0-9]{7,15}', clean):
        raise ValidationError("Invalid phone number. Please use E.164 format, e.g. +14155550100.")
    return clean

def validate_image_upload(size: int, content_type: Optional[str], max_bytes: int) -> None:
    if size <= 0:
        raise ValidationError("No file provided")
    if size > max_bytes:
        raise ValidationError(f"File size must be less than {max_bytes // (1024 * 1024)}MB")
    if not content_type or not content_type.startswith("image/"):
        raise ValidationError("File must be an image")

def validate_folder(folder: str) -> str:
    folder = folder.strip().strip("/")
    if not folder or not re.fullmatch(r'[A-Za-z0-9_\-/]+', folder) or ".." in folder:
        raise ValidationError("Invalid upload folder")
    return folder
