from io import StringIO
from typing import Dict, List

import pandas as pd

from channelflow.exceptions import InvalidDefinitionError


def parse_contact_file(content: str) -> List[Dict[str, str]]:
    """
    Parse a CSV contact export into {id, name, email} records.

    The file needs an 'email' column; 'name' and 'id' are optional. Rows without
    an email are dropped and the email doubles as the target id when no id is given.
    """
    if not content or not content.strip():
        return []
    try:
        df = pd.read_csv(StringIO(content), dtype=str)
    except Exception as e:
        raise InvalidDefinitionError(f"Invalid CSV format: {e}")

    df.columns = [h.strip().lower() for h in df.columns]
    if "email" not in df.columns:
        raise InvalidDefinitionError("CSV must contain 'email' column.")
    if "name" not in df.columns:
        df["name"] = "Valued Customer"
    if "id" not in df.columns:
        df["id"] = df["email"]

    df = df.fillna({"name": "Valued Customer"})
    df["email"] = df["email"].fillna("").str.strip()
    df = df[df["email"] != ""].copy()
    df["id"] = df["id"].fillna(df["email"]).str.strip()
    df = df.drop_duplicates(subset="id")
    return df[["id", "name", "email"]].to_dict("records")
