"""barberbook - availability resolution and booking orchestration for barbershops"""
