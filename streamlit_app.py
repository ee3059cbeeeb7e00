import streamlit as st
import requests
import pandas as pd

import config

BASE_URL = config.BACKEND_URL

st.title("Event Expenses Dashboard")

# Participants
st.header("Participants")
name = st.text_input("New participant name")
if st.button("Add Participant"):
    r = requests.post(f"{BASE_URL}/participants", json={"name": name})
    st.success(f"Added: {r.json()['name']}" if r.status_code == 200 else f"Error: {r.text}")

participants = requests.get(f"{BASE_URL}/participants").json()
st.dataframe(pd.DataFrame(participants))
names = {p["id"]: p["name"] for p in participants}

# Events
st.header("Events")
title = st.text_input("New event title")
if participants:
    host = st.selectbox("Host", options=participants, format_func=lambda p: p["name"])
    if st.button("Create Event"):
        r = requests.post(f"{BASE_URL}/events", json={"title": title, "created_by": host["id"]})
        st.success(f"Created: {r.json()['title']}" if r.status_code == 200 else f"Error: {r.text}")

events = requests.get(f"{BASE_URL}/events").json()
if not events:
    st.stop()
event = st.selectbox("Event", options=events, format_func=lambda e: e["title"])
event_url = f"{BASE_URL}/events/{event['id']}"

# RSVPs
st.subheader("Attendees")
guest = st.selectbox("Participant", options=participants, format_func=lambda p: p["name"], key="rsvp_guest")
status = st.radio("RSVP", options=["going", "maybe", "not_going"], horizontal=True)
if st.button("Save RSVP"):
    r = requests.post(f"{event_url}/rsvps", json={"participant_id": guest["id"], "status": status})
    st.success("RSVP saved" if r.status_code == 200 else f"Error: {r.text}")

attendees = requests.get(f"{event_url}/participants").json()
st.dataframe(pd.DataFrame(attendees))

# Add Expense
st.header("Add Expense")
if attendees:
    payer = st.selectbox("Paid by", options=attendees, format_func=lambda p: p["name"])
    description = st.text_input("Description")
    total_amount = st.number_input("Total Amount", min_value=0.0, step=0.01, format="%.2f")
    split_type = st.selectbox("Split", options=["equal", "percentage", "fixed_amount"])
    sharing = st.multiselect("Split between", options=attendees, default=attendees, format_func=lambda p: p["name"])

    split = {"type": split_type}
    if split_type == "equal":
        split["participant_ids"] = [p["id"] for p in sharing]
    else:
        label = "%" if split_type == "percentage" else "amount"
        values = {}
        for p in sharing:
            values[str(p["id"])] = st.number_input(f"{p['name']} ({label})", min_value=0.0, key=f"share_{p['id']}")
        split["percentages" if split_type == "percentage" else "amounts"] = values

    if st.button("Submit Expense"):
        r = requests.post(f"{event_url}/expenses", json={
            "payer_id": payer["id"],
            "description": description,
            "total_amount": f"{total_amount:.2f}",
            "split": split,
        })
        if r.status_code == 200:
            st.success("Expense added")
        else:
            st.error(f"Error: {r.text}")

expenses = requests.get(f"{event_url}/expenses").json()
if expenses:
    df = pd.DataFrame(expenses)
    df["payer"] = df["payer_id"].map(names)
    st.dataframe(df[["description", "payer", "total_amount", "split_type", "category"]])

# Balances
st.header("Balances")
if st.button("Compute Balances"):
    r = requests.get(f"{event_url}/balances")
    if r.status_code == 200:
        data = r.json()
        st.subheader("Net Balances")
        st.dataframe(pd.DataFrame(data["balances"])[["name", "net_balance"]] if data["balances"] else pd.DataFrame())
        st.subheader("Suggested Settlements")
        for s in data["settlements"]:
            st.write(f"{s['from_name']} pays {s['to_name']} {s['amount']}")
    else:
        st.error(f"Error: {r.text}")

# Record a payment
st.header("Record Settlement")
if len(attendees) > 1:
    sender = st.selectbox("From", options=attendees, format_func=lambda p: p["name"], key="settle_from")
    receiver = st.selectbox("To", options=attendees, format_func=lambda p: p["name"], key="settle_to")
    amount = st.number_input("Amount paid", min_value=0.0, step=0.01, format="%.2f", key="settle_amount")
    note = st.text_input("Note", key="settle_note")
    if st.button("Record Payment"):
        r = requests.post(f"{event_url}/settlements", json={
            "from_participant_id": sender["id"],
            "to_participant_id": receiver["id"],
            "amount": f"{amount:.2f}",
            "note": note or None,
        })
        st.success("Payment recorded" if r.status_code == 200 else f"Error: {r.text}")
