"""SMS/MMS relay: Twilio webhook ingress, message store, contact and thread API."""
