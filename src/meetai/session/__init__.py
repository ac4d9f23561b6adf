"""Client-side call session control.

CallSessionController sequences lobby -> joined -> ended for one call and
runs the capture -> reply -> speak loop while joined. Media, speech
recognition, and speech synthesis are reached through small ports so the
controller can drive any concrete engine.
"""

from src.meetai.session.controller import CallSessionController, CallSummary, CallView

__all__ = ["CallSessionController", "CallSummary", "CallView"]
