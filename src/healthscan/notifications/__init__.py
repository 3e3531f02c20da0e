"""Best-effort signup notifications and background job dispatch."""

from healthscan.notifications.dispatcher import BackgroundDispatcher
from healthscan.notifications.slack import SignupEvent, SlackNotifier

__all__ = ["BackgroundDispatcher", "SignupEvent", "SlackNotifier"]
