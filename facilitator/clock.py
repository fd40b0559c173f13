from django.utils import timezone


def unix_now() -> int:
    return int(timezone.now().timestamp())
