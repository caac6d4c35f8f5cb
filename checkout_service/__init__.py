"""PIX checkout backend: Mercado Pago payments with Supabase order persistence."""

__version__ = "1.0.0"
