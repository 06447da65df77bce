"""tokensale — KYC-gated crowdsale engine with precommitments, vesting and refunds."""

__version__ = "0.1.0"
