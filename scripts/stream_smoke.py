import argparse
import json
import sys
import time
import uuid
import requests

DEFAULT_PROMPT = "List the files in the working directory and summarize what this project does in two sentences."


def main():
    parser = argparse.ArgumentParser(description="Smoke test for the streaming chat endpoint.")
    parser.add_argument("--url", default="http://127.0.0.1:5025", help="Base URL of the server")
    parser.add_argument("--prompt", default=DEFAULT_PROMPT, help="Prompt to send")
    parser.add_argument("--cwd", default=None, help="Working directory for the agent")
    parser.add_argument("--session", default=None, help="Session id to resume")
    parser.add_argument("--answer", default=None, help="Answer to give any question the agent asks")
    parser.add_argument("--timeout", type=int, default=300, help="Timeout seconds")
    args = parser.parse_args()

    request_id = f"smoke-{uuid.uuid4().hex[:8]}"
    body = {"requestId": request_id, "message": args.prompt}
    if args.cwd:
        body["workingDirectory"] = args.cwd
    if args.session:
        body["sessionId"] = args.session

    counts = {}
    session_id = None
    failed = False
    start = time.time()

    with requests.post(f"{args.url}/api/chat", json=body, stream=True, timeout=args.timeout) as response:
        if response.status_code != 200:
            print(f"Chat request failed ({response.status_code}): {response.text}")
            return 1
        for line in response.iter_lines(decode_unicode=True):
            if not line:
                continue
            record = json.loads(line)
            kind = record.get("type")
            counts[kind] = counts.get(kind, 0) + 1

            if kind == "claude_json":
                data = record.get("data") or {}
                session_id = data.get("session_id") or session_id
                print(f"  {data.get('type')}/{data.get('subtype', '-')}")
            elif kind == "ask_user_question":
                headers = [q.get("header") for q in record.get("questions") or []]
                print(f"  question {record['questionId']}: {headers}")
                if args.answer is None:
                    print("  no --answer given; aborting")
                    requests.post(f"{args.url}/api/abort/{request_id}", timeout=10)
                    continue
                answers = {header: args.answer for header in headers}
                requests.post(
                    f"{args.url}/api/answer/{request_id}",
                    json={"questionId": record["questionId"], "answers": answers},
                    timeout=10,
                )
            elif kind == "error":
                print(f"  error: {record.get('error')}")
                failed = True
            elif kind == "done":
                break

            if time.time() - start > args.timeout:
                requests.post(f"{args.url}/api/abort/{request_id}", timeout=10)
                print("Timed out; aborted")
                failed = True
                break

    print(f"Records: {counts}")
    print(f"Session: {session_id}")
    return 1 if failed or "done" not in counts else 0


if __name__ == "__main__":
    sys.exit(main())
