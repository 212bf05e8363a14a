"""policyscan — platform usage policy scanner for local and remote source trees."""

__version__ = "0.1.0"
