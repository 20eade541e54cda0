"""Core release-integrity components: hashing, errors, the registrar and notifier."""
