from interview_lab.live.audio import AudioPipeline, AudioSink, LevelMeter, PlaybackQueue
from interview_lab.live.connection import ConnectionStateMachine
from interview_lab.live.credentials import CredentialService, SessionContext
from interview_lab.live.errors import ConfigurationError, FinalizeError, LiveSessionError, TransportError
from interview_lab.live.session import LiveSession
from interview_lab.live.transport import HumeTransport, Transport

__all__ = [
    "AudioPipeline",
    "AudioSink",
    "ConfigurationError",
    "ConnectionStateMachine",
    "CredentialService",
    "FinalizeError",
    "HumeTransport",
    "LevelMeter",
    "LiveSession",
    "LiveSessionError",
    "PlaybackQueue",
    "SessionContext",
    "Transport",
    "TransportError",
]
