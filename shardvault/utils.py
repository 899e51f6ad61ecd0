"""
Small helpers shared by the panel components.
"""

import secrets

ALPHABET = 'ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789'


def clean_path(path: str = None) -> str:
    """
    Normalize a logical directory path.

    Always starts and ends with '/', empty means the root.
    """
    if not path:
        path = '/'
    if not path.startswith('/'):
        path = f'/{path}'
    if not path.endswith('/'):
        path = f'{path}/'
    return path


def random_string(length: int) -> str:
    """Cryptographically random alphanumeric string."""
    return ''.join(secrets.choice(ALPHABET) for _ in range(length))


def format_size(bytes_count: float) -> str:
    """Format bytes as human-readable size."""
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if bytes_count < 1024:
            return f"{bytes_count:.1f} {unit}"
        bytes_count /= 1024
    return f"{bytes_count:.1f} PB"
