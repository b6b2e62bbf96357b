"""Key and CSR processing."""
