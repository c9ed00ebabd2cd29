"""
Identity Resolution

Locates the Personal Data Server hosting an account, starting from a handle or a DID.

Resolution Types:
1. Handle Resolution
   - DNS-based resolution via TXT records (_atproto.{handle})
   - HTTP-based resolution via well-known endpoints (.well-known/atproto-did)

2. DID Document Lookup
   - did:plc documents from the PLC directory
   - did:web documents from the host's .well-known/did.json

The PDS endpoint is the DID document service with id `#atproto_pds` or type
`AtprotoPersonalDataServer`.
"""
