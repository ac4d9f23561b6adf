"""Meeting lifecycle -- schemas, persistence, state machine, and transcripts.

Provides the data layer (Pydantic schemas, SQLAlchemy models,
MeetingRepository), the compare-and-swap MeetingStateMachine, transcript
retrieval with speaker resolution, and the user-facing MeetingService.
"""
