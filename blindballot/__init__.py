"""
blindballot: anonymous ranked-choice voting with RSA blind signatures.

  Identity side : the Authority blind-signs a voter's token once per identity
  Ballot side   : anonymous ballots keyed by token, tallied with instant-runoff
"""

__version__ = "0.1.0"
