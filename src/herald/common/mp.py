import logging
import os

from mixpanel import Mixpanel

logger = logging.getLogger(__name__)


class SilentMixpanel:
    def __init__(self, token: str = ""):
        pass

    def track(self, user_id: int | str, event: str, properties: dict | None = None):
        pass

    def people_set(self, user_id: int | str, properties: dict | None = None):
        pass


_token = os.getenv("MIXPANEL_PROJECT_TOKEN")
mp = Mixpanel(_token) if _token else SilentMixpanel()


def mute_mp_for_tests():
    global mp
    mp = SilentMixpanel()
