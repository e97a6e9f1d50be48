"""Services Layer — orchestration between the core store and IO.

Invariants:
    - Services decide when to persist and when to send mail; core decides legality
"""
