"""Domain packages: store, availability, booking"""
