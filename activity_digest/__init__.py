"""Activity digest scheduler.

Decides, per user of a discussion platform, whether a periodic "new activity"
summary email is due and which topics it contains.
"""

__version__ = "0.1.0"
