"""ORM Models — durable record layout of the account registry."""
