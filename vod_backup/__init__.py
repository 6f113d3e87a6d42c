"""VOD backup service: scheduled and on-demand archive downloads via yt-dlp."""

__version__ = "0.1.0"
