"""
Tally — Reward & Ledger Engine
===============================
The economic core of a gamified community platform: coin balances,
achievements, achievement points, feature unlocks and levels, mutated under
concurrent requests with at-most-once rewards and an append-only ledger.

Package layout::

    tally/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Level pricing, input limits
    ├── errors.py          # NotFound / InvalidInput / PolicyDenied / StoreFailure
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine, session helper, async bridge
    │   └── models.py      # Accounts, set tables, ledger, audit log
    ├── engine/
    │   ├── catalog.py     # Static reward catalog (achievements, prices, milestones)
    │   └── limits.py      # Rolling-window quota decision
    └── services/
        ├── account_service.py   # Registration, lookups, soft delete
        ├── award_service.py     # grant_once — idempotent achievement awarder
        ├── progress_service.py  # record_action / award_ap_once — stats & AP
        ├── economy_service.py   # transfer, purchase, level-up, admin mutations
        ├── ledger_service.py    # append-only ledger, rate windows, history
        └── audit_service.py     # best-effort admin audit log
"""

__version__ = "0.1.0"
