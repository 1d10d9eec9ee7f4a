from .imap_source import ImapIngestionSource, ImapMailbox
from .parser import parse_message

__all__ = ['ImapIngestionSource', 'ImapMailbox', 'parse_message']
