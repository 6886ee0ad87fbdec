"""
PBX audio streamer.

Watches the PBX call-control event feed and streams a pre-recorded WAV file
to every participant whose status becomes "Connected".
"""

__version__ = "1.0.0"
