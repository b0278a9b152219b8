"""
Supabase clients for the Mailplan backend.

Two clients are created at import time:

  supabase        anon key. Only used to validate user JWTs through
                  supabase.auth.get_user() when SUPABASE_JWT_SECRET is unset.
  supabase_admin  service-role key. Every table the email pipeline touches
                  (workspace_configs, agent and tool mappings, credentials,
                  email_interactions, activity and LLM logs) is read and
                  written through this client. Inbound webhooks carry no user
                  session, so row-level security cannot apply.

Services never import this module directly; routers pass supabase_admin in,
which keeps the pipeline testable against an in-memory double.
"""

import os
from supabase import create_client, Client
from dotenv import load_dotenv

load_dotenv()

SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_KEY = os.getenv("SUPABASE_KEY")
SUPABASE_SERVICE_KEY = os.getenv("SUPABASE_SERVICE_KEY")

if not SUPABASE_URL or not SUPABASE_KEY:
    raise ValueError("SUPABASE_URL and SUPABASE_KEY must be set in environment variables")

supabase: Client = create_client(SUPABASE_URL, SUPABASE_KEY)

# None without a service key; the webhook and rerun routes then fail with 500
supabase_admin: Client = create_client(SUPABASE_URL, SUPABASE_SERVICE_KEY) if SUPABASE_SERVICE_KEY else None
