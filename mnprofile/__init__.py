"""Music Nerd Profile: Spotify top tracks in, playful AI profile out."""

__version__ = '0.1.0'
