"""Authentication — MSAL token acquisition."""
