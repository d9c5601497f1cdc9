"""Local stand-ins for the payment gateway and the mail transport."""
