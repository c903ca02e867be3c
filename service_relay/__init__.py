"""News Relay service distribution."""
