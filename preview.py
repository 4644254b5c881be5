from sqlmodel import Session, select
from chatlog.db import make_engine
from chatlog.dates import DateNormalizer
from chatlog.models import ChatMessage, ChatRecord, UserProfile
from chatlog.settings import get_settings

settings = get_settings()

pg_engine = make_engine(settings.database_url)
normalizer = DateNormalizer(settings.timezone)

def main():
    with Session(pg_engine) as session:
        profiles = {profile.email: profile for profile in session.exec(select(UserProfile)).all()}
        emails = session.exec(select(ChatRecord.email).distinct().order_by(ChatRecord.email)).all()

        for email in emails:
            profile = profiles.get(email)
            print(email, f"({profile.user_name}, license={profile.license_number or '-'})" if profile else "(no profile)")
            chat_records = session.exec(select(ChatRecord).where(ChatRecord.email == email).order_by(ChatRecord.chat_date)).all()
            for chat_record in chat_records:
                print(normalizer.to_civil_date(chat_record.chat_date), f"in={chat_record.input_token} out={chat_record.output_token}")
                messages = session.exec(select(ChatMessage).where(ChatMessage.chat_id == chat_record.id).order_by(ChatMessage.id)).all()
                for message in messages:
                    print("  ", normalizer.to_civil_timestamp(message.date), f"[{message.sender}]", message.message)
                print()
            print("------------")

if __name__ == "__main__":
    main()
