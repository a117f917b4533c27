"""
Worker module.
Contains the polling worker loop and the shell command runner.
"""
