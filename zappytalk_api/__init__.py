"""ZappyTalk gateway: session dispatch and user data API for the voice agent."""

__version__ = "0.1.0"
