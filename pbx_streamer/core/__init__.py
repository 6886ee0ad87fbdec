"""
Event subscription, audio upload and the data models they share.
"""
