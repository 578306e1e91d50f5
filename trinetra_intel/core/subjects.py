import ipaddress
import re
from typing import Iterable, Optional, Union
from urllib.parse import urlsplit, urlunsplit

from trinetra_intel.core.errors import InvalidSubject
from trinetra_intel.core.verdicts import Subject, SubjectKind

PACKAGE_NAME_PATTERN = re.compile(r'^[A-Za-z][A-Za-z0-9_]*(\.[A-Za-z0-9_]+)+$')
HEX_PATTERN = re.compile(r'^[0-9a-f]+$')
HASH_LENGTHS = {32: 'md5', 40: 'sha1', 64: 'sha256'}
PHONE_STRIP_PATTERN = re.compile(r'[^\d+]')
PERMISSION_PREFIX = 'android.permission.'

MIN_PHONE_DIGITS = 7
MAX_PHONE_DIGITS = 15


def make_subject(
    kind: Union[SubjectKind, str],
    identifier: str,
    permissions: Optional[Iterable[str]] = None,
    file_hash: Optional[str] = None
) -> Subject:
    """
    Validate and normalize raw input into an immutable Subject

    Args:
        kind: Subject kind ('app', 'url', 'ip', 'phone')
        identifier: Package name, URL, IP address or phone number
        permissions: Declared Android permissions (apps only)
        file_hash: md5/sha1/sha256 of the APK (apps only)

    Returns:
        Normalized Subject

    Raises:
        InvalidSubject: if the identifier cannot be normalized
    """
    try:
        kind = SubjectKind(kind)
    except ValueError:
        raise InvalidSubject(str(identifier), f"unknown subject kind '{kind}'")

    if not isinstance(identifier, str) or not identifier.strip():
        raise InvalidSubject(str(identifier), "empty identifier")

    if kind == SubjectKind.APP:
        return Subject(
            kind=kind,
            identifier=normalize_package_name(identifier),
            permissions=normalize_permissions(permissions or []),
            file_hash=normalize_hash(file_hash) if file_hash else None
        )
    if kind == SubjectKind.URL:
        return Subject(kind=kind, identifier=normalize_url(identifier))
    if kind == SubjectKind.IP:
        return Subject(kind=kind, identifier=normalize_ip(identifier))
    return Subject(kind=kind, identifier=normalize_phone(identifier))


# ===== Normalizers =====

def normalize_package_name(raw: str) -> str:
    value = raw.strip()
    if not PACKAGE_NAME_PATTERN.match(value):
        raise InvalidSubject(raw, "not a valid package name")
    return value


def normalize_permission(raw: str) -> str:
    """'android.permission.READ_SMS' and 'READ_SMS' are the same permission"""
    value = raw.strip()
    if value.startswith(PERMISSION_PREFIX):
        value = value[len(PERMISSION_PREFIX):]
    return value


def normalize_permissions(raw: Iterable[str]) -> tuple:
    # dict.fromkeys keeps first-seen order while dropping duplicates
    cleaned = (normalize_permission(p) for p in raw if p and p.strip())
    return tuple(dict.fromkeys(cleaned))


def normalize_hash(raw: str) -> str:
    value = raw.strip().lower()
    if len(value) not in HASH_LENGTHS or not HEX_PATTERN.match(value):
        raise InvalidSubject(raw, "file hash must be md5, sha1 or sha256 hex")
    return value


def normalize_ip(raw: str) -> str:
    try:
        return str(ipaddress.ip_address(raw.strip()))
    except ValueError:
        raise InvalidSubject(raw, "not a valid IP address")


def normalize_url(raw: str) -> str:
    """
    Canonicalize a URL: lowercase scheme and host, default scheme http,
    default path '/', fragment and credentials dropped.
    """
    value = raw.strip()
    if '://' not in value:
        value = 'http://' + value

    try:
        parts = urlsplit(value)
        port = parts.port
    except ValueError:
        raise InvalidSubject(raw, "malformed URL")

    scheme = parts.scheme.lower()
    if scheme not in ('http', 'https'):
        raise InvalidSubject(raw, f"unsupported scheme '{scheme}'")

    host = parts.hostname or ''
    if not host:
        raise InvalidSubject(raw, "URL has no host")
    if not is_ip_literal(host) and '.' not in host and host != 'localhost':
        raise InvalidSubject(raw, "URL host is not a domain name")

    netloc = f"[{host}]" if ':' in host else host
    if port:
        netloc = f"{netloc}:{port}"

    return urlunsplit((scheme, netloc, parts.path or '/', parts.query, ''))


def normalize_phone(raw: str) -> str:
    """Strip everything except digits and a leading '+'"""
    cleaned = PHONE_STRIP_PATTERN.sub('', raw)
    if cleaned.count('+') > 1 or ('+' in cleaned and not cleaned.startswith('+')):
        raise InvalidSubject(raw, "misplaced '+' in phone number")

    digits = cleaned.lstrip('+')
    if not MIN_PHONE_DIGITS <= len(digits) <= MAX_PHONE_DIGITS:
        raise InvalidSubject(raw, "phone number must have 7-15 digits")
    return cleaned


# ===== Helpers =====

def is_ip_literal(value: str) -> bool:
    try:
        ipaddress.ip_address(value)
        return True
    except ValueError:
        return False


def url_host(url: str) -> str:
    return urlsplit(url).hostname or ''
