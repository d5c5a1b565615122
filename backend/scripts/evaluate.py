"""Evaluation harness for corpus Q&A.

Usage (API running, documents already processed):

python -m scripts.evaluate --questions data/questions.csv --output results.json

questions.csv format:
question,expected_keywords (semicolon separated)
"What was Q3 revenue?","revenue;Q3"
"""
from __future__ import annotations
import csv, json, argparse, time, os
import httpx


def load_questions(path: str):
    rows = []
    with open(path) as f:
        r = csv.DictReader(f)
        for row in r:
            kws = [k.strip() for k in row.get("expected_keywords", "").split(";") if k.strip()]
            rows.append({"question": row["question"], "expected_keywords": kws})
    return rows


def score_answer(answer: str, keywords: list[str]):
    answer_l = answer.lower()
    hits = sum(1 for k in keywords if k.lower() in answer_l)
    return hits / max(1, len(keywords))


def main():
    ap = argparse.ArgumentParser()
    ap.add_argument("--questions", required=True)
    ap.add_argument("--output", required=True)
    ap.add_argument("--api", default=os.environ.get("API_URL", "http://localhost:8000"))
    args = ap.parse_args()
    qs = load_questions(args.questions)
    results = []
    with httpx.Client(timeout=180) as client:
        for q in qs:
            t0 = time.time()
            r = client.post(f"{args.api}/api/qa/ask", json={"question": q["question"]})
            data = r.json()
            answer = data.get("answer") or data.get("error", "")
            results.append({
                "question": q["question"],
                "keywords": q["expected_keywords"],
                "answer": answer,
                "insufficient_evidence": data.get("insufficientEvidence"),
                "citations": len(data.get("citations") or []),
                "score": score_answer(answer, q["expected_keywords"]),
                "latency_ms": int((time.time() - t0) * 1000),
            })
    with open(args.output, "w") as f:
        json.dump({"results": results}, f, indent=2)
    avg = sum(r["score"] for r in results)/max(1,len(results))
    cited = sum(1 for r in results if r["citations"])
    print(f"Average keyword coverage: {avg:.2%} across {len(results)} questions ({cited} with citations)")


if __name__ == "__main__":
    main()
