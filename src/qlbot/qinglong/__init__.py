"""Qinglong panel integration."""

from qlbot.qinglong.client import QinglongClient, QinglongError

__all__ = ["QinglongClient", "QinglongError"]
