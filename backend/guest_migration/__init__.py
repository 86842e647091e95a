"""Guest-to-account migration engine for Fathom learning accounts."""
