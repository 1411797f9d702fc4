"""
slotresolver - conflict detection and resolution for therapist calendars.
"""

__version__ = "0.3.0"
