"""mastercode_sync: Imweb product import, master code issuance and push-back."""
