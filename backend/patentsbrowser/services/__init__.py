"""PatentsBrowser Services"""
