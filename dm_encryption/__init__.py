"""Direct message encryption at rest.

The package exposes the message cipher, the envelope codec and the one-time
migration runner, together with the Flask application that stores direct
conversations. Modules are imported as ``dm_encryption.<module>``; importing
the package itself has no side effects so the cipher can be used without
configuring the web application.
"""
