"""Clients for the collaborators FundSplit talks to."""
