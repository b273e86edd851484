"""Load testing script for the legal chat API using Locust.

Run with: locust -f loadtest/locustfile.py --host=http://localhost:3000

Or headless mode:
    locust -f loadtest/locustfile.py --host=http://localhost:3000 \
           --headless -u 10 -r 2 -t 60s

Anonymous users run out of free questions after two answers and then receive
signup prompts, so most anonymous traffic measures the cheap path.
"""

import random

from locust import HttpUser, between, task

COMMON_QUESTIONS = [
    "Combien de temps dure un divorce par consentement mutuel ?",
    "Qui garde les enfants après un divorce ?",
    "Comment est calculée la pension alimentaire ?",
    "Qu'est-ce que la prestation compensatoire ?",
    "Faut-il obligatoirement un avocat pour divorcer ?",
    "Comment se partagent les biens après un divorce ?",
]

# Same questions, different case and padding: these should hit the cache
QUESTION_VARIANTS = [
    ("Qui garde les enfants après un divorce ?", "  qui garde les enfants après un divorce ?  "),
    ("Qu'est-ce que la prestation compensatoire ?", "QU'EST-CE QUE LA PRESTATION COMPENSATOIRE ?"),
]


class AnonymousVisitor(HttpUser):
    """Visitor without an account, carrying the quota cookie between requests."""

    wait_time = between(0.5, 2.0)

    @task(10)
    def ask_common_question(self):
        self.client.post(
            "/api/chat",
            json={"message": random.choice(COMMON_QUESTIONS)},
            name="/api/chat (anonymous)",
        )

    @task(3)
    def ask_variant(self):
        self.client.post(
            "/api/chat",
            json={"message": random.choice(random.choice(QUESTION_VARIANTS))},
            name="/api/chat (variant)",
        )

    @task(2)
    def start_over(self):
        """Drop the quota cookie, as a new visitor would."""
        self.client.cookies.clear()

    @task(1)
    def check_stats(self):
        self.client.get("/api/stats", name="/api/stats")

    @task(1)
    def check_health(self):
        self.client.get("/health", name="/health")

    @task(1)
    def check_circuits(self):
        self.client.get("/api/circuits", name="/api/circuits")


class RegisteredUser(HttpUser):
    """Signed-in user with unlimited questions and recorded conversations.

    The email must belong to an existing account for history to be recorded.
    """

    wait_time = between(0.1, 0.5)

    def on_start(self):
        self.client.cookies.set("registered", "1")
        self.client.cookies.set("user_email", f"loadtest+{random.randint(1, 20)}@example.com")
        self.session_id = None

    @task(8)
    def ask_question(self):
        body = {"message": random.choice(COMMON_QUESTIONS)}
        if self.session_id:
            body["sessionId"] = self.session_id
        with self.client.post(
            "/api/chat", json=body, name="/api/chat (registered)", catch_response=True
        ) as response:
            if response.status_code == 429:
                response.success()
            elif response.ok:
                self.session_id = response.json().get("sessionId")

    @task(1)
    def list_conversations(self):
        self.client.get("/api/conversations", name="/api/conversations")
